from fastapi.security import OAuth2PasswordBearer

# Supabase access tokens arrive as "Authorization: Bearer <token>". The
# tokenUrl is only shown in the OpenAPI docs; sign-in happens on Supabase.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

"""FastAPI surface: app routes, request/response schemas and middleware."""

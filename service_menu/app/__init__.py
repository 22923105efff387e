"""
Menu Service package.

Serves restaurant menus and per-user favorites. Protected routes require
an RSA-signed bearer token from the identity provider.

Structure:
- app.main: FastAPI app, routes, and wiring.
- app.jwks: Key set client (signing key resolution).
- app.validation: Bearer token verification.
- app.identity: Subject -> user resolution and session context.
- app.menus: Models, relationship engine (writes), query assembler (reads).
- app.persistence: Storage interfaces and the asyncpg adapter.
"""

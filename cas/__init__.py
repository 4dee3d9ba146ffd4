"""cas/ -- Central Authentication Service (CAS) client package.

Protocol client (URL construction, serviceValidate parsing), ticket validator,
session boundary, and the authentication gate.

Layer rule: cas/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or web/. api/ and web/ import from cas/,
not the other way around. cas/dependencies.py is the one module allowed to
import fastapi, because it is the FastAPI adapter for the gate.
"""

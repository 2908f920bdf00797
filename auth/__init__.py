"""auth/ -- Authentication core of the rental marketplace.

Credential issuance, the User Directory contract, session exchange, password
recovery, registration and the Account Status Gate.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and notify/.
It does NOT import from api/ or kyc/. api/ imports from auth/, not the other
way around.
"""

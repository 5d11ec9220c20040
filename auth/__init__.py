"""auth/ -- Accounts, sessions, and password policy for Crewroster.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, teams/, or avatars/.
api/ and web/ import from auth/, not the other way around.
"""

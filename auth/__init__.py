"""auth/ -- Authentication and session-lifecycle package for SessionGate.

Layer rule: auth/ imports only stdlib + third-party libraries. It does NOT
import from api/ or cache/ -- AuthService reaches the OTP store through the
narrow interfaces declared in auth/service.py. cache/ imports auth.errors so
its stores raise the same domain errors. api/ imports from auth/ and cache/,
not the other way around.
"""

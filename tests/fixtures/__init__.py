"""
GrantMatch Test Fixtures Package
Fakes and helpers shared by the test modules.
"""

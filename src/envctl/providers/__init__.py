"""Environment backends.

Backends are looked up by name through :mod:`envctl.environs.registry`.
"""

"""
residentml core: IR, expression language, state, compiler and renderer.
"""

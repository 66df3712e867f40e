# photoverify/__init__.py
"""
Keep this file minimal so 'photoverify' is always a proper package.

Do NOT import submodules here (e.g., don't import main).
Tests and runtime should import from 'photoverify.main' directly:
    from photoverify.main import create_app
And Uvicorn should use:
    uvicorn photoverify.main:create_app --factory
"""

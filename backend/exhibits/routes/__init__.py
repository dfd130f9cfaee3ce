from importlib import import_module

modules = [
    'exhibits',
    'records',
    'recycle',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules

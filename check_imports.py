import importlib
modules = [
    'codeimport.lib.named_lock',
    'codeimport.lib.lock_coordinator',
    'codeimport.services.importer',
    'codeimport.cli',
]
for m in modules:
    try:
        importlib.import_module(m)
        print('import ok:', m)
    except Exception as e:
        print('import FAILED:', m, e)
        raise
print('done')

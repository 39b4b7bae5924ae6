"""credstore/ -- Flat-file htpasswd/htgroup credential store.

Layer rule: credstore/ imports only stdlib, third-party libraries and core/.
Hosts (main.py, web plugins) import from credstore/, not the other way around.
"""

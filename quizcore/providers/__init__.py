"""
Provider orchestration.

- catalog: purposes, vendor families, built-in providers
- settings_store: persisted settings and credential resolution
- adapters: one capability contract, one implementation per family
- registry: adapters for one orchestration cycle
- router: purpose selection policies and validation fan-out
"""

"""
Quiz content provider orchestration core.

Generates and validates bilingual quiz questions by calling several
independently-operated LLM backends through one adapter contract.

Modules:
- config: OrchestratorSettings and the YAML/env loader
- security: SecretCipher — encrypted provider credentials
- storage: RowStore protocol with in-memory and Supabase backends
- providers: settings snapshot, adapters, registry, purpose router
- observability: structured logging
"""

__version__ = "0.4.0"

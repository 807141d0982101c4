"""
Student mediation dialogue engine.

Modules:
- manager: MediationManager session state machine
- states: SessionState/Resolution + Message/Session data
- speaker: next-speaker inference and marker stripping
- retry: Ok/Failure results + backoff combinator
- proxy: AI chat proxy client over httpx
- store: Supabase transcript store + session code validation
"""

# flake8: noqa
"""
Backend package for the Ollama travel web UI.

Modules:
    settings:  Configuration loading and per-request Ollama snapshots.
    streaming: Incremental NDJSON decoding and the fragment relay.
    llm:       Ollama client for single answers and streamed answers.
    users:     JSON-file user accounts and signed session cookies.
    travel:    Trip validation, prompt building and answer sections.
    weather:   Open-Meteo lookups and forecast normalisation.
    templates: HTML rendering for the test page.
    main:      FastAPI application wiring everything together.
"""

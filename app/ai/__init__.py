"""
Siteline — construction project management platform
AI module: document extraction.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, usage logging)
    - extraction: invoice and quote parsing from uploaded images
"""

"""Local intent resolution.

The intent layer maps a free-text chat message to a structured `Intent` (skill, action, params)
through a tiered pipeline: exact lookup in the learned pattern store, fuzzy token-overlap matching,
and finally an external LLM fallback whose cacheable answers are memorized for next time.
"""

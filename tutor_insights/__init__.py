"""
Tutor Insights backend package.

Scores tutoring-session quality with a language model, aggregates per-tutor
risk metrics in a batch pipeline, and exposes the results through a JSON API.
"""

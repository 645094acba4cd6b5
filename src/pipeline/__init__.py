"""
Background Generation Pipeline

Four-stage workflow per user:
1. Upload - source product image
2. Background removal - product mask via the provider
3. Style selection - background category or custom prompt
4. Synthesis - new background generated around the product
"""

"""Story text processing modules.

This package includes the story script parser and segment selection helpers.
"""

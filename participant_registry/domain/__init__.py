"""Domain layer for the participant registry.

Contains the record model, query and change models, and the error
taxonomy. Nothing in this package depends on infrastructure.
"""

"""
Core infrastructure shared by the auth service apps: base model, error
taxonomy, request middleware, logging and the email collaborator.
"""

"""Therma daemon: request pipeline, collaborators and HTTP surface."""

"""Turns a source image into the target grid of carpet colors."""

"""Strict game matcher and fuzzy team resolver."""

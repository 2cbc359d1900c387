"""Search index, cache and search services"""

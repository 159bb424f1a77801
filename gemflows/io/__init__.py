"""
Host capabilities used by step execution: console input, system clipboard
and local files.
"""

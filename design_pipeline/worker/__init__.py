"""
Worker module for the design pipeline: stage definitions, executors and the runner.
"""

"""
CoFlow Pipelines.

Business logic orchestration functions.
"""

from coflow.pipelines.groups import *

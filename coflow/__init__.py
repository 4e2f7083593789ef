"""
CoFlow study groups core.

Group lifecycle, membership admission and schedule-conflict enforcement
for time-boxed study groups.
"""

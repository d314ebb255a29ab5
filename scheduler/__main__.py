"""
Entry point for running the scheduler as a module.

Usage:
    python -m scheduler validate input.json
    python -m scheduler solve input.json --db sqlite:///timetables.db --timetable T1
    python -m scheduler conflicts --db sqlite:///timetables.db --timetable T1
    python -m scheduler workload --db sqlite:///timetables.db --timetable T1 --teacher t1
"""

from scheduler.cli import main

if __name__ == "__main__":
    main()

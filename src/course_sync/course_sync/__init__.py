"""Course Sync package.

Keeps a term's timetable in sync with teachers' and students' calendars.
Organized by feature modules (courses, roster, tasks, sync, ...) with a thin
Flask controller layer over async service/repository layers.
"""

"""
Kodislovo Services
==================
Domain logic behind the HTTP routes: variant loading, attempt sessions,
deadline, grading, submission, reset codes and the instructor console.
"""

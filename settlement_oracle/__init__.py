"""Automated settlement oracle for binary prediction markets."""

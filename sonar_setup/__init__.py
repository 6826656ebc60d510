"""
Sonar Setup - Reconcile users, groups, permissions and settings of a SonarQube server.

This package drives a running server toward a declarative YAML document through
its administrative web API, one reconciliation pass per invocation.
"""

__version__ = "1.0.0"
__author__ = "Sonar Setup Team"

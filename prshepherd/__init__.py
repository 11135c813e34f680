"""
prshepherd - Shepherd dependency-update PRs from forks to upstream.

A CLI tool that:
1. Finds the forks an account owns of an upstream organization's projects
2. Collects the open dependabot PRs on those forks
3. Classifies each PR (upstream copy, mergeability, CI status)
4. Takes one action per PR: recreate, run an update script, or submit upstream

Labels on the fork PRs are the only state carried between runs.

Usage:
    prshepherd run --github.user me --github.token ~/.gh-token
    prshepherd run --dry-run
    prshepherd classify me/node_exporter 42
"""

__version__ = "0.1.0"
__author__ = "prshepherd"

"""
bicep-ops: tooling for a Bicep infrastructure repository.

Wraps the parts of an Infrastructure-as-Code repository that are not the
templates themselves:

- Naming convention from a prefix/workload/environment triple
- Environment profiles and deployment parameter files (dev/staging/prod)
- The dependency-ordered module composition of the orchestration template
- Regex assertions against template source
- az CLI build/validate/what-if/deploy and Checkov security scans
"""

"""
Pipeline stages, in execution order:

- tooling: host tool availability
- visibility: hide dotfiles and ignored paths
- worktree: clean-worktree guard
- suites: core then frontend test suites
- build: forced workspace build
- export: exporter run + compile-info artifact policy
- installer: installer compilation
"""

"""specsheet: run declarative check documents and report the results.

The package is split the way a run flows through it:

- ``checks``: the parameter framework, the check abstraction and the
  registered check families.
- ``engine``: document loading, rewriting, filtering, the side-process
  supervisor, the scheduler and the result model.
- ``ui``: the command line and the output reporters.

Importing the package has no side effects; check families register
themselves when ``specsheet.checks`` is imported.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]

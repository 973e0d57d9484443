"""Survey Platform - Backend.

REST API behind the survey frontend:
- Username/password login issuing stateless JWT session tokens.
- Role-gated CRUD (admin / creator / respondent) for companies, employees,
  categories, questions, surveys and survey responses.
- One parameterized query interface (run / get / all) over SQLite or Postgres.

See README for setup and usage.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"

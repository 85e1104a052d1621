# Configuration file for Sphinx documentation builder

project = "bybit-vault-cli"
copyright = "2026, Trading System Team"
author = "Trading System Team"
release = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.viewcode",
    "sphinx.ext.napoleon",
    "sphinx_rtd_theme",
]

templates_path = ["_templates"]
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]

html_theme = "sphinx_rtd_theme"

autodoc_mock_imports = ["aiohttp"]

# Napoleon settings for docstring parsing
napoleon_google_docstring = True
napoleon_include_private_names = False

# Sphinx configuration for the metagene-profiles API documentation.
#
# Build with:  sphinx-build -b html docs docs/_build/html

import os
import sys

# autodoc imports the package from the src/ layout
sys.path.insert(0, os.path.abspath("../src"))

# -- Project -------------------------------------------------------------------

project = "metagene-profiles"
copyright = "2025, Stefan Cordes"
author = "Stefan Cordes"
release = "0.1.0"

# -- Extensions ----------------------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "sphinx.ext.intersphinx",
    "sphinx.ext.doctest",
]

templates_path = ["_templates"]
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]

# pysam is a compiled extension; docs can be built without htslib
autodoc_mock_imports = ["pysam"]

autodoc_default_options = {
    "members": True,
    "show-inheritance": True,
    "member-order": "bysource",
}
autodoc_typehints = "description"
autosummary_generate = True

# -- Napoleon (NumPy docstrings) -----------------------------------------------

napoleon_google_docstring = False
napoleon_numpy_docstring = True
napoleon_include_special_with_doc = True
napoleon_use_param = True
napoleon_use_rtype = True
napoleon_attr_annotations = True

# -- Intersphinx ---------------------------------------------------------------

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "numpy": ("https://numpy.org/doc/stable/", None),
    "pandas": ("https://pandas.pydata.org/docs/", None),
    "scipy": ("https://docs.scipy.org/doc/scipy/", None),
    "pysam": ("https://pysam.readthedocs.io/en/stable/", None),
}

# -- HTML ----------------------------------------------------------------------

html_theme = "alabaster"
html_static_path = ["_static"]
html_theme_options = {
    "description": "Metagene profiles of sequencing coverage over genomic region sets",
    "github_repo": "metagene-profiles",
}

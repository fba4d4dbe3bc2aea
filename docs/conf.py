# Configuration file for the Sphinx documentation builder.
project = 'acmeflow'
copyright = '2026, acmeflow'
author = 'acmeflow'
release = '1.0.0'

extensions = ['sphinx.ext.autodoc', 'sphinx.ext.napoleon']
autodoc_mock_imports = ['dns']

templates_path = ['_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

html_theme = 'sphinx_rtd_theme'
html_static_path = ['_static']

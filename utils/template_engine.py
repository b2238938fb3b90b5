"""Scaffold rendering with string.Template."""

import os
from string import Template


def get_templates_dir():
    """Absolute path of the bundled templates directory."""
    return os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")


def load_template(template_dir, template_name):
    templates_dir = os.path.realpath(get_templates_dir())
    resolved = os.path.realpath(os.path.join(templates_dir, template_dir, template_name))
    if not resolved.startswith(templates_dir + os.sep):
        raise ValueError(f"Template path escapes templates directory: {template_dir}/{template_name}")
    with open(resolved, "r", encoding="utf-8") as f:
        return f.read()


def render_template(template_dir, template_name, variables):
    """Render one template. Unknown ``$placeholders`` are left untouched,
    which matters for JSX template literals like ``${count}``."""
    return Template(load_template(template_dir, template_name)).safe_substitute(variables)


def render_stack(stack, variables):
    """Render every scaffold file of a stack definition: {project path: content}."""
    return {
        path: render_template(stack["template_dir"], template_name, variables)
        for path, template_name in stack["scaffold_files"].items()
    }

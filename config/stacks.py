"""Stack definitions for the projects the pipeline builds."""

STACKS = {
    "vite-react": {
        "name": "Vite + React + Tailwind",
        "template_dir": "vite_react",
        "scaffold_files": {
            "package.json": "package.json.tmpl",
            "vite.config.js": "vite.config.js.tmpl",
            "tailwind.config.js": "tailwind.config.js.tmpl",
            "postcss.config.js": "postcss.config.js.tmpl",
            "index.html": "index.html.tmpl",
            "src/main.jsx": "main.jsx.tmpl",
            "src/App.jsx": "App.jsx.tmpl",
            "src/index.css": "index.css.tmpl",
        },
        "preinstalled": [
            "react", "react-dom", "vite", "@vitejs/plugin-react",
            "tailwindcss", "postcss", "autoprefixer",
        ],
        "install_command": ["npm", "install", "--legacy-peer-deps"],
        "dev_command": ["npm", "run", "dev"],
        "dev_port": 5173,
    },
}

# sandbox/bootstrap.py - provisions the Vite + React + Tailwind skeleton in a fresh environment

import asyncio
import json
from typing import Dict, Optional

from loguru import logger

from config.app_config import appConfig
from sandbox.environment import RemoteEnvironment
from sandbox.errors import ProvisionError

VITE_PID_FILE = '/tmp/vite-process.pid'

PACKAGE_JSON = {
    "name": "sandbox-app",
    "version": "1.0.0",
    "type": "module",
    "scripts": {
        "dev": "vite --host 0.0.0.0 --port 5173 --strictPort",
        "build": "vite build",
        "preview": "vite preview --host 0.0.0.0 --port 5173",
    },
    "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0"},
    "devDependencies": {
        "@vitejs/plugin-react": "^4.3.0",
        "vite": "^5.4.0",
        "tailwindcss": "^3.4.0",
        "postcss": "^8.4.31",
        "autoprefixer": "^10.4.16",
    },
}

VITE_CONFIG = """import { defineConfig } from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({
  plugins: [react()],
  server: {
    host: '0.0.0.0',
    port: 5173,
    strictPort: true,
    allowedHosts: true,
    hmr: { clientPort: 443 },
    watch: { usePolling: true, interval: 1000 },
    cors: true
  }
})
"""

TAILWIND_CONFIG = """/** @type {import('tailwindcss').Config} */
export default {
  content: [
    "./index.html",
    "./src/**/*.{js,ts,jsx,tsx}",
  ],
  theme: {
    extend: {},
  },
  plugins: [],
}
"""

POSTCSS_CONFIG = """export default {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
}
"""

INDEX_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Sandbox App</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="/src/main.jsx"></script>
  </body>
</html>
"""

INDEX_CSS = """@tailwind base;
@tailwind components;
@tailwind utilities;

*, *::before, *::after {
  box-sizing: border-box;
}

body {
  margin: 0;
  -webkit-font-smoothing: antialiased;
}
"""

MAIN_JSX = """import React from 'react'
import ReactDOM from 'react-dom/client'
import App from './App.jsx'
import './index.css'

ReactDOM.createRoot(document.getElementById('root')).render(
  <React.StrictMode>
    <App />
  </React.StrictMode>,
)
"""

APP_JSX = """function App() {
  return (
    <div className="min-h-screen bg-gray-900 text-white flex items-center justify-center p-4">
      <div className="text-center max-w-2xl">
        <h1 className="text-4xl font-bold mb-4">Sandbox Ready</h1>
        <p className="text-lg text-gray-400">
          This placeholder will be replaced when you generate your app.
        </p>
      </div>
    </div>
  )
}

export default App
"""

PROJECT_FILES: Dict[str, str] = {
    "package.json": json.dumps(PACKAGE_JSON, indent=2) + "\n",
    "vite.config.js": VITE_CONFIG,
    "tailwind.config.js": TAILWIND_CONFIG,
    "postcss.config.js": POSTCSS_CONFIG,
    "index.html": INDEX_HTML,
    "src/index.css": INDEX_CSS,
    "src/main.jsx": MAIN_JSX,
    "src/App.jsx": APP_JSX,
}


def install_script(app_dir: str) -> str:
    return f"""
import subprocess
result = subprocess.run(['npm', 'install'], cwd={app_dir!r}, capture_output=True, text=True)
if result.returncode == 0:
    print('NPM_INSTALL_OK')
else:
    print('NPM_INSTALL_FAILED')
    print(result.stderr[-2000:])
"""


def start_dev_server_script(app_dir: str) -> str:
    return f"""
import os
import signal
import subprocess

try:
    with open({VITE_PID_FILE!r}) as f:
        os.killpg(int(f.read().strip()), signal.SIGTERM)
except Exception:
    pass

env = os.environ.copy()
env['FORCE_COLOR'] = '0'
process = subprocess.Popen(
    ['npm', 'run', 'dev'],
    cwd={app_dir!r},
    env=env,
    stdout=subprocess.DEVNULL,
    stderr=subprocess.DEVNULL,
    start_new_session=True,
)
with open({VITE_PID_FILE!r}, 'w') as f:
    f.write(str(process.pid))
print(f'VITE_PROCESS_STARTED:{{process.pid}}')
"""


class ViteBootstrapper:
    """Writes the project skeleton, installs dependencies and starts the dev server."""

    def __init__(self, app_dir: Optional[str] = None, settle_delay: Optional[float] = None):
        self.app_dir = app_dir or appConfig.e2b.appDir
        self.settle_delay = appConfig.e2b.viteStartupDelay / 1000 if settle_delay is None else settle_delay

    async def bootstrap(self, environment: RemoteEnvironment) -> None:
        logger.info(f"[bootstrap] Setting up Vite React app in sandbox {environment.sandbox_id}...")

        for relative_path, content in PROJECT_FILES.items():
            try:
                await environment.write_file(f"{self.app_dir}/{relative_path}", content)
            except Exception as e:
                raise ProvisionError(f"Failed to write {relative_path}: {e}") from e
            logger.debug(f"[bootstrap] ✓ {relative_path}")

        logger.info("[bootstrap] Installing dependencies...")
        install = await environment.run_code(install_script(self.app_dir))
        if not install.ok:
            raise ProvisionError(f"npm install could not run: {install.error}")
        if "NPM_INSTALL_OK" not in install.stdout:
            # dev server may still come up from a partial install
            logger.warning(f"[bootstrap] Dependency installation had issues: {install.stdout.strip()}")

        logger.info("[bootstrap] Starting Vite dev server...")
        start = await environment.run_code(start_dev_server_script(self.app_dir))
        if not start.ok:
            raise ProvisionError(f"Failed to start dev server: {start.error}")

        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)
        logger.info("[bootstrap] ✓ Setup complete")

#!/usr/bin/env python3
"""
Startup script for the InsightFlow Core Flask app.
Run this to start the HTTP API that exposes the scheduled tasks.
"""

import os
from app import create_app

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    print("🚀 Starting InsightFlow Core Flask server...")
    print(f"📡 API will be available at: http://localhost:{port}")
    print(f"🔔 Fire digests now: POST http://localhost:{port}/tasks/notifications/fire")
    print(f"📚 Task manifest at: http://localhost:{port}/tasks/manifest")
    print("\nPress Ctrl+C to stop the server")

    app = create_app()
    app.run(debug=False, host='0.0.0.0', port=port)

"""
Run the review server with Waitress WSGI Server (production-grade, no reloader issues)
SSE streams hold a worker thread each, so size THREADS for concurrent reviews
"""
import os

from waitress import serve
from main import app

if __name__ == '__main__':
    port = app.config['PORT']
    threads = int(os.getenv('THREADS', '8'))

    print("\n" + "="*70)
    print(f"Starting Redline AI review server with Waitress on port {port}")
    print("No reloader - code changes require manual restart")
    print("="*70 + "\n")

    serve(app, host='0.0.0.0', port=port, threads=threads)

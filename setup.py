from setuptools import setup, find_packages

setup(
    name='kb_ingest',
    version='0.1.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    install_requires=[
        'fastapi>=0.110',
        'uvicorn>=0.27',
        'python-multipart>=0.0.9',
        'pydantic>=2.5',
        'pydantic-settings>=2.1',
        'python-dotenv>=1.0',
        'httpx>=0.27',
        'redis>=5.0',
        'numpy>=1.26',
        'faiss-cpu>=1.7.4',
        'PyMuPDF>=1.23',
        'openai>=1.10',
        'sentence-transformers>=2.5',
    ],
    extras_require={
        'test': [
            'pytest>=8.0',
            'pytest-asyncio>=0.23',
        ],
    },
    author='Your Name',
    author_email='your.email@example.com',
    description='Background ingestion of PDF and text documents into a retrieval-ready knowledge base.',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    url='https://github.com/your-repo/kb_ingest',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.10',
)

"""allow running k3sboot with ``python -m k3sboot``"""
from k3sboot.k3sboot import main

main()

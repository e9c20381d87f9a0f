from cos_gpu_installer.cli import main

main()

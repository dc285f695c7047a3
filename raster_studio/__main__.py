from raster_studio.app import main

main()
